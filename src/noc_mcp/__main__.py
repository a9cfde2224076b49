import sys

from noc_mcp.cli import main

sys.exit(main())
