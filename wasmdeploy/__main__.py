"""Allow ``python -m wasmdeploy``."""

from wasmdeploy.pipeline import main

if __name__ == "__main__":
    main()
