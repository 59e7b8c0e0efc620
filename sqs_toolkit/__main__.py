import sys

from sqs_toolkit.workers.sqs_consumer import main

# Allows `python -m sqs_toolkit` to run the configured consumer worker.
if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
