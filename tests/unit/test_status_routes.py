"""
Unit tests for status routes (dbshield/routes/status_routes.py).
"""

from datetime import datetime, timezone


class TestHealth:
    """Test health check."""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json() == {'status': 'healthy'}


class TestStatus:
    """Test GET /api/status/."""

    def test_no_targets(self, client, db):
        response = client.get('/api/status/')

        assert response.status_code == 200
        data = response.get_json()
        assert data['targets'] == []
        assert data['scheduler']['initialized'] is False

    def test_target_summary(self, client, mariadb_target, make_artifacts):
        make_artifacts(mariadb_target.output_dir, [
            'sales_20240101_000000.sql',
            'sales_20240102_000000.sql',
        ])

        data = client.get('/api/status/').get_json()

        (summary,) = data['targets']
        assert summary['name'] == 'sales'
        assert summary['kind'] == 'mariadb'
        assert summary['backup_count'] == 2
        assert summary['last_backup'] == 'sales_20240102_000000.sql'
        assert summary['last_fired'] is None
        assert datetime.fromisoformat(summary['next_run']) > datetime.now(timezone.utc)
        assert 'password_encrypted' not in summary
        assert 's3cret' not in str(data)

    def test_invalid_schedule(self, client, db, mariadb_target):
        mariadb_target.schedule_cron = 'bogus'
        db.session.commit()

        data = client.get('/api/status/').get_json()

        assert data['targets'][0]['next_run'] == 'invalid schedule'

    def test_disabled_target_has_no_next_run(self, client, db, mariadb_target):
        mariadb_target.enabled = False
        db.session.commit()

        data = client.get('/api/status/').get_json()

        assert data['targets'][0]['enabled'] is False
        assert data['targets'][0]['next_run'] is None
