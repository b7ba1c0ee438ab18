import sys

import spread.main

if __name__ == "__main__":  # codecov-skip
    sys.exit(spread.main.cli(sys.argv[1:]))
