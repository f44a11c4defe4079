"""Order sync pipeline: window, classify, extract, dedupe, reconcile."""
