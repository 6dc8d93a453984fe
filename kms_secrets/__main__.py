import sys

from kms_secrets.cli import main

sys.exit(main())
