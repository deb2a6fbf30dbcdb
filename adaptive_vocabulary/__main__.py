import sys

from adaptive_vocabulary.cli import main

sys.exit(main())
