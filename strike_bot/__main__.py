import sys

from strike_bot.main import main

sys.exit(main())
