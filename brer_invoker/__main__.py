import sys

from brer_invoker.cli import main

sys.exit(main())
