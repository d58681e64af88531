"""CPU watchdog: thread dumps for a process that stays CPU-hot."""
