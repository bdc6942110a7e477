"""Role mapping, capability binding, context stacks and the trigger gate.

Kept free of the `Context` class so each piece can be used and tested alone.
"""
