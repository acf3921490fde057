""" Put the project root on the path so tests run without installing it first. """

import sys
import os

ROOTDIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOTDIR not in sys.path:
    sys.path.insert(0, ROOTDIR)
