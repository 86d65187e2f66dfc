from django.test import SimpleTestCase

from apps.common.exceptions import NotFound
from apps.users.choices import UserRole
from apps.users.directory import UserDirectory, UserProfile


class UserDirectoryTestCase(SimpleTestCase):
    """Test the in-memory identity directory."""

    def setUp(self):
        self.directory = UserDirectory([
            UserProfile(id='admin-1', name='Alex Admin', role=UserRole.ADMIN),
            UserProfile(id='att-1', name='Ana Attorney', role=UserRole.ATTORNEY,
                        active_task_count=4, max_active_tasks=10, supervisor_id='admin-1'),
            UserProfile(id='att-2', name='Ben Attorney', role=UserRole.ATTORNEY, is_active=False),
        ])

    def test_list_users_filters_role_and_inactive(self):
        attorneys = self.directory.list_users(role=UserRole.ATTORNEY)
        self.assertEqual([user.id for user in attorneys], ['att-1'])

    def test_supervisor_lookup(self):
        self.assertEqual(self.directory.get_supervisor('att-1').id, 'admin-1')
        self.assertIsNone(self.directory.get_supervisor('admin-1'))
        self.assertIsNone(self.directory.get_supervisor('missing'))

    def test_workload_ratio(self):
        self.assertAlmostEqual(self.directory.get_user('att-1').workload_ratio, 0.4)

    def test_adjust_active_task_count_never_negative(self):
        self.assertEqual(self.directory.adjust_active_task_count('att-1', 2), 6)
        self.assertEqual(self.directory.adjust_active_task_count('att-1', -10), 0)
        self.assertEqual(self.directory.get_active_task_count('att-1'), 0)

    def test_require_user_raises_not_found(self):
        with self.assertRaises(NotFound):
            self.directory.require_user('ghost')
