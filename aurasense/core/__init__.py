"""Core domain logic: the namespaced record store and the risk-inference engine.

This package holds the storage layer, the decision-tree pipeline and their
domain models, independent of any particular health condition so they can be
tested and reasoned about in isolation.
"""
