"""
Interactive client selection for contacts without a client mapping.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class PromptAborted(Exception):
    """Raised when the operator's input stream ends."""
    pass


class ClientPrompt:
    """
    Asks the operator which client a new contact belongs to.

    Input and output functions are injectable so the prompt can be driven
    without a terminal.
    """

    DECLINE = '0'

    def __init__(self, input_func: Callable[[str], str] = input,
                 output_func: Callable[[str], None] = print):
        self.input_func = input_func
        self.output_func = output_func

    def choose(self, record: Dict[str, Any], clients: List[Dict[str, Any]]) -> Optional[Any]:
        """
        Show the record and the client list, and read a choice.

        Args:
            record: Directory record being created
            clients: Clients as returned by the remote API

        Returns:
            The chosen client id, or None if the operator entered 0

        Raises:
            PromptAborted: On end of input
        """
        ordered = sorted(clients, key=lambda c: str(c.get('name', '')).lower())
        by_key = {str(client['id']): client['id'] for client in ordered}

        self.output_func("")
        self.output_func(f"New contact: {record.get('display_name') or '(no name)'} <{record.get('email')}>")
        self.output_func(f"  DN: {record.get('dn', '')}")
        for client in ordered:
            self.output_func(f"  {client['id']:>8}  {client.get('name', '')}")
        self.output_func(f"  {self.DECLINE:>8}  Skip and do not ask again")

        while True:
            try:
                answer = self.input_func("Client ID: ")
            except EOFError:
                raise PromptAborted("Input closed while choosing a client")

            answer = (answer or '').strip()
            if answer == self.DECLINE:
                return None
            if answer in by_key:
                return by_key[answer]

            logger.debug(f"Rejected client selection '{answer}'")
            self.output_func(f"'{answer}' is not a listed client ID, enter one of the IDs above or 0")
