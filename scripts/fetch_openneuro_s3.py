# scripts/fetch_openneuro_s3.py
# downloads the selected subjects/runs of the dataset in configs/ds000105.yaml
# (raw BIDS first, then fMRIPrep derivatives). Extra args go to the CLI.

import sys
from pathlib import Path
from fmrifetch.cli import main

CONFIG = Path(__file__).resolve().parents[1] / "configs" / "ds000105.yaml"

if __name__ == "__main__":
    argv = sys.argv[1:]
    if "-c" not in argv and "--config" not in argv:
        argv = ["--config", str(CONFIG)] + argv
    sys.exit(main(argv))
