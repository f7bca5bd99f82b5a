"""Tests for passive transition learning."""

from app_explorer.delivery_queue import DeliveryQueue
from app_explorer.knowledge import ElementBounds, UIElement
from app_explorer.navigation_learner import NavigationLearner
from app_explorer.payloads import TransitionAction, TransitionPayload

PKG = "com.example.app"


def elements(*texts, password=False):
    return [
        UIElement(text=t, class_name="android.widget.Button", bounds=ElementBounds(0, i * 100, 200, 80), clickable=True, password=password)
        for i, t in enumerate(texts)
    ]


def make_learner(db, clock, **kwargs):
    queue = DeliveryQueue(db, clock=clock)
    return NavigationLearner(queue, "nav/dest", clock=clock, **kwargs), queue


class TestLearning:
    """Tests for which screen changes are learned."""

    def test_activity_change_is_queued(self, db, clock):
        """Test an intra-app activity change becomes a queued payload."""
        learner, queue = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".Main", elements("Settings"))
        learner.on_action_performed(TransitionAction.tap(100, 40, text="Settings"))
        clock.advance(1)
        payload = learner.on_screen_changed(PKG, ".Settings", elements("Wi-Fi", "Bluetooth"))

        assert payload is not None
        assert payload.before_activity == ".Main"
        assert payload.after_activity == ".Settings"
        assert payload.action.action_type == "tap"
        assert payload.transition_time_ms == 1000
        assert len(payload.after_ui_elements) == 2

        entry = queue.pending()[0]
        assert entry.entry_type == "navigation"
        assert entry.priority == DeliveryQueue.PRIORITY_NAVIGATION
        assert entry.destination == "nav/dest"
        assert TransitionPayload.from_wire(entry.payload).after_activity == ".Settings"
        assert learner.statistics().transitions_learned == 1

    def test_same_activity_not_learned(self, db, clock):
        """Test a change within the same activity is ignored."""
        learner, queue = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".Main", elements("A"))
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".Main", elements("B")) is None
        assert queue.size() == 0

    def test_package_change_not_learned(self, db, clock):
        """Test leaving the app is not an intra-app transition."""
        learner, queue = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".Main", elements("A"))
        clock.advance(1)
        assert learner.on_screen_changed("com.android.chrome", ".Browser", elements("B")) is None
        assert queue.size() == 0

    def test_first_screen_not_learned(self, db, clock):
        """Test the first observed screen has nothing to compare with."""
        learner, _ = make_learner(db, clock)
        assert learner.on_screen_changed(PKG, ".Main", elements("A")) is None

    def test_learning_gate(self, db, clock):
        """Test packages refused by the gate are never learned."""
        learner, queue = make_learner(db, clock, is_learning_allowed=lambda p: p != PKG)
        learner.on_screen_changed(PKG, ".Main", elements("A"))
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".Other", elements("B")) is None
        assert queue.size() == 0

    def test_disabled(self, db, clock):
        """Test a disabled learner ignores everything."""
        learner, queue = make_learner(db, clock, enabled=False)
        learner.on_screen_changed(PKG, ".Main", elements("A"))
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".Other", elements("B")) is None


class TestTiming:
    """Tests for debouncing and action expiry."""

    def test_debounce(self, db, clock):
        """Test a second transition within 0.5s is dropped."""
        learner, queue = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".A", elements("x"))
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".B", elements("y")) is not None
        clock.advance(0.25)
        assert learner.on_screen_changed(PKG, ".C", elements("z")) is None
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".D", elements("w")) is not None
        assert queue.size() == 2

    def test_stale_action_dropped(self, db, clock):
        """Test an action older than 3s is not attributed to the transition."""
        learner, _ = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".A", elements("x"))
        learner.on_action_performed(TransitionAction.back())
        clock.advance(5)
        payload = learner.on_screen_changed(PKG, ".B", elements("y"))
        assert payload.action is None


class TestPrivacy:
    """Tests for element filtering."""

    def test_sensitive_elements_excluded(self, db, clock):
        """Test password and sensitive elements never leave the device."""
        learner, _ = make_learner(db, clock)
        secret = UIElement(text="hunter2", class_name="android.widget.EditText", bounds=ElementBounds(0, 0, 10, 10), password=True)
        card = UIElement(text="4111", class_name="android.widget.EditText", bounds=ElementBounds(0, 0, 10, 10), sensitive=True)
        learner.on_screen_changed(PKG, ".Login", [secret, card] + elements("Sign in"))
        clock.advance(1)
        payload = learner.on_screen_changed(PKG, ".Home", elements("Feed"))
        assert [e.text for e in payload.before_ui_elements] == ["Sign in"]

    def test_element_cap(self, db, clock):
        """Test at most fifty summaries per side."""
        learner, _ = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".A", elements("x"))
        clock.advance(1)
        payload = learner.on_screen_changed(PKG, ".B", elements(*[f"item{i}" for i in range(80)]))
        assert len(payload.after_ui_elements) == 50


class TestStatistics:
    """Tests for counters and reset."""

    def test_failed_enqueue_counts_skipped(self, db, clock):
        """Test a storage failure is counted as skipped."""
        learner, _ = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".A", elements("x"))
        db.close()
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".B", elements("y")) is None
        assert learner.statistics().transitions_skipped == 1

    def test_reset(self, db, clock):
        """Test reset forgets the previous screen."""
        learner, _ = make_learner(db, clock)
        learner.on_screen_changed(PKG, ".A", elements("x"))
        learner.reset()
        clock.advance(1)
        assert learner.on_screen_changed(PKG, ".B", elements("y")) is None
