from __future__ import annotations

from gpupin.utils.colors import YELLOW


class Logger:
  messages: list[str]

  def __init__(self):
    self.messages = []

  def clear(self):
    self.messages = []

  def warn(self, message: str):
    self.messages.append(f"{YELLOW}{message}")


logger = Logger()
