"""
Mastering Engine
----------------
Entry point for analysing, auditioning and rendering a stereo track.

Usage:
  python master_track.py --in "input.wav" --analyze-only
  python master_track.py --in "input.wav" --out "mastered.wav" --preset "Club Loud" --set stereo_width=120
  python master_track.py --in "input.wav" --play
  python master_track.py --self-test
"""

import sys

from mastering_engine.mastering_studio import main


if __name__ == "__main__":
    sys.exit(main())
