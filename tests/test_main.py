"""
Tests for command dispatch, exit codes and signal handling of the CLI.
"""

import signal
import unittest
from unittest.mock import MagicMock, patch

import main
from tracking.pairing import AccessControl
from tracking.sync import NewEntry, SyncResult


def fake_services():
    services = MagicMock()
    services.access = AccessControl(MagicMock(), admin_user=100, allowed_users=[100])
    return services


class TestSignalHandling(unittest.TestCase):

    def setUp(self):
        self._saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
        main._shutdown_event.clear()

    def tearDown(self):
        for sig, handler in self._saved.items():
            signal.signal(sig, handler)
        main._shutdown_event.clear()

    def test_one_shot_commands_keep_default_interrupt(self):
        with patch("main.initialize_system", return_value=fake_services()), \
                patch("main.cmd_status", return_value=0):
            self.assertEqual(main.main(["status"]), 0)
        self.assertIsNot(signal.getsignal(signal.SIGINT), main.signal_handler)

    def test_interrupted_sync_exits_130(self):
        with patch("main.initialize_system", return_value=fake_services()), \
                patch("main.cmd_sync", side_effect=KeyboardInterrupt), \
                patch("main.log_warning"):
            self.assertEqual(main.main(["sync", "1"]), 130)

    def test_run_installs_graceful_shutdown(self):
        main._shutdown_event.set()
        with patch("main.config.validate_config", return_value=[]), \
                patch("main.print_configuration"), \
                patch("communication.telegram_notifier.init_telegram_notifier"), \
                patch("main.init_update_scheduler") as init_scheduler, \
                patch("main.get_lock_manager"), \
                patch("main.log_ready"), \
                patch("main.log_success"):
            self.assertEqual(main.cmd_run(fake_services(), MagicMock()), 0)
        self.assertIs(signal.getsignal(signal.SIGINT), main.signal_handler)
        self.assertIs(signal.getsignal(signal.SIGTERM), main.signal_handler)
        init_scheduler.return_value.stop.assert_called_once()


class TestCommands(unittest.TestCase):

    def test_check_prints_notice(self):
        services = fake_services()
        services.engine.update_one.return_value = SyncResult(
            work_id=1,
            user_id=100,
            external_id="ext-1",
            title="Some Work",
            new_entries=[NewEntry(key="12", label="12", title="The [Return]")],
            unread_count=3,
        )
        with patch("main.console") as console:
            self.assertEqual(main.cmd_check(services, MagicMock(work=1)), 0)
        text = console.print.call_args[0][0]
        self.assertIn("Some Work has new chapters:", text)
        self.assertIn("Ch. 12: The [Return]", text)
        self.assertIn("3 unread", text)

    def test_pair_refused_for_non_admin(self):
        services = fake_services()
        with patch("main.initialize_system", return_value=services), patch("main.log_error") as log_error:
            self.assertEqual(main.main(["pair", "5"]), 1)
        services.access.store.create_pairing_code.assert_not_called()
        self.assertIn("not the admin", log_error.call_args[0][0])

    def test_pair_for_admin(self):
        services = fake_services()
        services.access.store.create_pairing_code.return_value = MagicMock(code="3F9A-07C2")
        with patch("main.initialize_system", return_value=services), patch("main.console") as console:
            self.assertEqual(main.main(["pair", "100"]), 0)
        self.assertIn("3F9A-07C2", console.print.call_args_list[0][0][0])


if __name__ == "__main__":
    unittest.main()
