"""Entry point for python -m beepstream (alias of python -m beepstream_service)."""

from beepstream_service.__main__ import main

if __name__ == "__main__":
    main()
