"""
Tests for Health and Root Endpoints
"""
import pytest


class TestHealthEndpoints:
    """Test health check endpoints"""

    def test_health_check(self, client):
        """Test health endpoint"""
        response = client.get('/health')

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'healthy'
        assert data['service'] == 'exam-proctoring'

    def test_health_head(self, client):
        """HEAD is answered for the client latency measurement"""
        response = client.head('/health')

        assert response.status_code == 200

    def test_root_endpoint(self, client):
        """Test root endpoint"""
        response = client.get('/')

        assert response.status_code == 200
        data = response.json()
        assert 'message' in data
        assert 'docs' in data
