"""Remote helpdesk contact API integrations."""
