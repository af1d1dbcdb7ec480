"""
Pod-level building blocks of the k8s batch queue: manifests, the in-pod
status protocol, the out-of-band failure log and per-job records.
"""
