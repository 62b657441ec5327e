from __future__ import annotations

from sys import exit


def confirm(message: str):
  while True:
    try:
      answer = input(f'{message}: [Y/n] ').strip().lower()
    except EOFError:
      # stdin is closed, nobody can confirm
      print()
      answer = 'n'
    if answer in ('y', ''): return True
    if answer == 'n':
      print("execution cancelled")
      exit(1)
