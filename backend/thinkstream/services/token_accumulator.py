"""Running text buffer for one generation."""


class TokenAccumulator:
    """Append-only buffer of the fragments received so far."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._text = ""
        self.fragment_count = 0

    def append(self, fragment: str) -> str:
        """
        Append a fragment and return the full buffer.

        Args:
            fragment: Raw text chunk from the backend, in arrival order

        Returns:
            The accumulated text including this fragment
        """
        self._parts.append(fragment)
        self.fragment_count += 1
        self._text = "".join(self._parts)
        return self._text

    @property
    def text(self) -> str:
        return self._text

    def __len__(self) -> int:
        return len(self._text)

    def clear(self) -> None:
        """Discard the buffer once the session no longer needs it"""
        self._parts = []
        self._text = ""
