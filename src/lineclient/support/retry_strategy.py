from lineclient.support.mixins import CommonEqualityMixin


class RetryStrategy:
    """
    Decides how long to wait before the next reconnection attempt.
    Calling the strategy returns the delay in seconds and advances it.
    """
    def __call__(self):
        return 0

    def reset(self):
        """ called once an attempt succeeds. """
        pass


class PeriodRetryStrategy(RetryStrategy, CommonEqualityMixin):

    def __init__(self, retry_period):
        """
        :param retry_period: The retry period in seconds.
        """
        self.retry_period = retry_period

    def __call__(self):
        return self.retry_period


class BackoffRetryStrategy(RetryStrategy, CommonEqualityMixin):
    """
    Waits `initial` seconds before the first retry, then multiplies the delay by `factor`
    on each further failure, never waiting longer than `maximum`.

    >>> retry = BackoffRetryStrategy(1, 5)
    >>> [retry() for i in range(5)]
    [1, 2, 4, 5, 5]
    """

    def __init__(self, initial, maximum, factor=2):
        if initial <= 0 or maximum < initial or factor < 1:
            raise ValueError("invalid backoff %s..%s x%s" % (initial, maximum, factor))
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.next_delay = initial

    def __call__(self):
        result = self.next_delay
        self.next_delay = min(self.next_delay * self.factor, self.maximum)
        return result

    def reset(self):
        self.next_delay = self.initial
