import sys
from pathlib import Path

# Makes the package importable without installing it
SRC = Path(__file__).absolute().parent.parent / "src" / "py"
if str(SRC) not in sys.path:
	sys.path.insert(0, str(SRC))

# EOF
