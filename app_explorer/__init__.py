"""App Explorer package providing autonomous, learning UI exploration of apps.

UI capture and action execution are delegated to a caller-supplied `UIDriver`; this package is the decision and
learning core around it.

Key sub-modules:

knowledge.py           – Learned map model: screens, reliability-weighted transitions, menu patterns.
session.py             – Per-session exploration state and the result handed back to callers.
state_matcher.py       – Structural screen signatures, element ids and action patterns.
element_resolver.py    – Multi-strategy, confidence-scored element re-identification.
coverage_tracker.py    – Coverage metrics and the exploration frontier.
path_finder.py         – Shortest-reliable-path search over the learned navigation graph.
state_machine.py       – Exploration lifecycle state machine.
database.py            – SQLite persistence shared by all stores.
map_store.py           – Persistent, capped store of learned maps.
value_store.py         – Q-table cache with background mirroring and bounded-size pruning.
q_learning.py          – Q-learning policy with human feedback and a danger registry.
delivery_queue.py      – Durable, priority-ordered outbox with exponential backoff.
payloads.py            – Typed wire payloads handed to the delivery queue.
navigation_learner.py  – Passive learning of intra-app transitions.
recovery.py            – Escalating strategies for a stuck exploration.
explorer.py            – The end-to-end exploration loop.
"""
