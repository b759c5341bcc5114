import threading
import time
import unittest

from projectstore.locks import ReadWriteLock


class ReadWriteLockTests(unittest.TestCase):
    def test_readers_share_the_lock(self):
        lock = ReadWriteLock()
        both_inside = threading.Barrier(2, timeout=5)

        def reader():
            with lock.read_lock():
                both_inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)
        self.assertFalse(both_inside.broken)

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        entered = threading.Event()

        def reader():
            with lock.read_lock():
                entered.set()

        with lock.write_lock():
            thread = threading.Thread(target=reader)
            thread.start()
            self.assertFalse(entered.wait(0.1))
        self.assertTrue(entered.wait(5))
        thread.join(timeout=5)

    def test_writer_waits_for_active_reader(self):
        lock = ReadWriteLock()
        entered = threading.Event()

        def writer():
            with lock.write_lock():
                entered.set()

        with lock.read_lock():
            thread = threading.Thread(target=writer)
            thread.start()
            self.assertFalse(entered.wait(0.1))
        self.assertTrue(entered.wait(5))
        thread.join(timeout=5)

    def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        order = []
        writer_waiting = threading.Event()

        def writer():
            writer_waiting.set()
            with lock.write_lock():
                order.append("writer")

        def late_reader():
            with lock.read_lock():
                order.append("reader")

        with lock.read_lock():
            writer_thread = threading.Thread(target=writer)
            writer_thread.start()
            writer_waiting.wait(5)
            # Give the writer time to register as waiting.
            time.sleep(0.1)
            reader_thread = threading.Thread(target=late_reader)
            reader_thread.start()
            time.sleep(0.1)
            self.assertEqual(order, [])

        writer_thread.join(timeout=5)
        reader_thread.join(timeout=5)
        self.assertEqual(order, ["writer", "reader"])

    def test_lock_released_on_error(self):
        lock = ReadWriteLock()
        with self.assertRaises(RuntimeError):
            with lock.write_lock():
                raise RuntimeError("boom")
        with lock.read_lock():
            pass
        with lock.write_lock():
            pass


if __name__ == "__main__":
    unittest.main()
