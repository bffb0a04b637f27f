import sys

from appliance_installer.main import main


if __name__ == "__main__":
    sys.exit(main())
