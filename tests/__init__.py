"""Test package for Interview Studio.

The session engine, phase timer, persistence and summary tests are pure and
drive time through a fake clock. The UI smoke tests run the pygame shell
headlessly using SDL's dummy video driver. To run these tests, execute
``pytest`` from the project root.
"""
