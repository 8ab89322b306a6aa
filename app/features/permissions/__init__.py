"""
Permission feature module.

Static role based capability checks (gate) and row level visibility
(scope) shared by every feature.
"""
