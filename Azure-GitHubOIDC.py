#!/usr/bin/env python3

from azoidc.cli import main


if __name__ == "__main__":
    main()
