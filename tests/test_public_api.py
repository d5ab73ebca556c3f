import unittest

import gitopsmgr


class TestPublicApi(unittest.TestCase):
    def test_top_level_exports_exist(self) -> None:
        self.assertTrue(hasattr(gitopsmgr, "GitOpsManager"))
        self.assertTrue(hasattr(gitopsmgr, "ReconciliationScheduler"))
        self.assertTrue(hasattr(gitopsmgr, "Reconciler"))
        self.assertTrue(hasattr(gitopsmgr, "InMemorySource"))
        self.assertTrue(hasattr(gitopsmgr, "InMemoryDestination"))

        self.assertTrue(hasattr(gitopsmgr, "Target"))
        self.assertTrue(hasattr(gitopsmgr, "SyncPolicy"))
        self.assertTrue(hasattr(gitopsmgr, "Action"))
        self.assertTrue(hasattr(gitopsmgr, "SyncPlan"))
        self.assertTrue(hasattr(gitopsmgr, "NoopPlan"))
        self.assertTrue(hasattr(gitopsmgr, "SyncResult"))
        self.assertTrue(hasattr(gitopsmgr, "ReconciliationState"))

        self.assertTrue(hasattr(gitopsmgr, "GitOpsMgrError"))
        self.assertTrue(hasattr(gitopsmgr, "InvalidStateError"))

    def test___all___is_defined(self) -> None:
        self.assertTrue(hasattr(gitopsmgr, "__all__"))
        self.assertIn("GitOpsManager", gitopsmgr.__all__)
        self.assertIn("GitOpsMgrError", gitopsmgr.__all__)
        for name in gitopsmgr.__all__:
            self.assertTrue(hasattr(gitopsmgr, name), name)


if __name__ == "__main__":
    unittest.main()
