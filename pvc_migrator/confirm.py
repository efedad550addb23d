"""Operator confirmation gates."""


class TerminalConfirmation:
    """Ask on the controlling terminal; anything but an explicit yes declines."""

    def __init__(self, input_fn=input):
        self.input_fn = input_fn

    def confirm(self, prompt):
        try:
            answer = self.input_fn(f"\n[?] {prompt} [y/N]: ")
        except EOFError:
            print()
            return False
        return answer.strip().lower() in ("y", "yes")
