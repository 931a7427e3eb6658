# zm_platform
# Reconciliation engine and configuration for the ZotMirror local library mirror.
