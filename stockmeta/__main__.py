import sys

from stockmeta.image_to_text import main

sys.exit(main())
