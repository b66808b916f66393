from __future__ import annotations


class AlarmError(Exception):
  """
  The local alert primitive (tone, bell, player command) failed.
  """
