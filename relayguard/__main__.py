import sys

from relayguard.run_guard import main

sys.exit(main())
