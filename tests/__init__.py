"""Test package for the shape search experiment.

The core tests drive the layout generator and both state machines with a
fake clock and explicit ``advance`` steps. The smoke tests run the pygame host
with the SDL dummy video driver so no real window is opened. Run ``pytest``
from the project root.
"""
