import sys

from crud_connector.cli import main

sys.exit(main())
