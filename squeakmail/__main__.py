"""Entry point: python -m squeakmail"""

from squeakmail.pipeline.cli import main

if __name__ == "__main__":
    main()
