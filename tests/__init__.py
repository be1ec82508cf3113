"""Test package for the N-Back Trainer.

Core tests drive the sequence generator, scheduler and engine with a fake
clock, so no real time passes. UI smoke tests run pygame with the SDL dummy
drivers. Run ``pytest`` from the project root.
"""
