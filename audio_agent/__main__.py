import sys

from audio_agent.cli.shell import main

sys.exit(main())
