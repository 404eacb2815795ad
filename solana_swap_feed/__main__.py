import sys

from solana_swap_feed.main import main

sys.exit(main())
