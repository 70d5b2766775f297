"""Allows running the configure pass with ``python -m rmm_build``"""

from .main import main

if __name__ == "__main__":
    main()
