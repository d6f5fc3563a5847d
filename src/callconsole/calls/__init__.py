"""
Outbound call records: trigger, reconciliation and platform callbacks.

Keep package import side-effects to a minimum; import submodules directly.
"""
