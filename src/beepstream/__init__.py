"""BeepStream package alias.

Lets operators run `python -m beepstream` instead of
`python -m beepstream_service`.
"""

from beepstream_service import __version__  # noqa: F401
