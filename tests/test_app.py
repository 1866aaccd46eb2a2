from unittest.mock import patch

import app as app_module
from conftest import SCENARIO_A, SCENARIO_B, SCENARIO_E
from generative import GenerativeServiceError


def analyze(client, schedule):
    return client.post('/analyze', data={'schedule': schedule})


def test_index(client):
    response = client.get('/')

    assert response.status_code == 200
    assert b'Transaction Schedule Analyzer' in response.data


def test_analyze_requires_schedule(client):
    assert analyze(client, '   ').status_code == 400
    assert analyze(client, 'nonsense').status_code == 400


def test_analyze(client):
    response = analyze(client, SCENARIO_A)
    data = response.get_json()

    assert response.status_code == 200
    assert data['success']
    assert data['precedence_graph']['is_serializable'] is True
    assert data['precedence_graph']['serial_order'] == ['T1', 'T2']
    assert data['two_pl_report']['transaction_compliance']['T2']['rigorous_2pl'] is True
    assert data['view_serializability_discussion'] is None


def test_analyze_accepts_json(client):
    response = client.post('/analyze', json={'schedule': SCENARIO_B})

    assert response.status_code == 200
    assert response.get_json()['precedence_graph']['is_serializable'] is False


def test_analyze_adds_discussion_for_cycles(client, flask_app):
    flask_app.config['ASSISTANT_URL'] = 'http://assistant.local'

    with patch.object(app_module, 'ScheduleAssistant') as assistant_cls:
        assistant_cls.return_value.discuss_view_serializability.return_value = {'discussion': 'maybe'}
        data = analyze(client, SCENARIO_B).get_json()

    assert data['view_serializability_discussion'] == 'maybe'
    schedule, cycle_info = assistant_cls.return_value.discuss_view_serializability.call_args[0]
    assert schedule == SCENARIO_B
    assert cycle_info == 'Cycle detected involving transactions: T1->T2, T2->T1'


def test_analyze_survives_discussion_failure(client, flask_app):
    flask_app.config['ASSISTANT_URL'] = 'http://assistant.local'

    with patch.object(app_module, 'ScheduleAssistant') as assistant_cls:
        assistant_cls.return_value.discuss_view_serializability.side_effect = GenerativeServiceError('down')
        response = analyze(client, SCENARIO_B)

    data = response.get_json()
    assert response.status_code == 200
    assert data['precedence_graph']['is_serializable'] is False
    assert data['view_serializability_discussion'] == 'View serializability discussion could not be loaded.'


def test_step_requires_schedule(client):
    assert client.post('/step').status_code == 400
    assert client.post('/run').status_code == 400
    assert client.get('/simulation').status_code == 400


def test_step_through_deadlock(client):
    analyze(client, SCENARIO_E)

    for _ in range(3):
        data = client.post('/step').get_json()
        assert data['step']['is_deadlock'] is False

    data = client.post('/step').get_json()
    assert data['step']['is_deadlock'] is True
    assert data['current_step_index'] == 3
    assert [e['transaction_id'] for e in data['step']['waiting_queue']] == ['T1', 'T2']


def test_step_past_the_end(client):
    analyze(client, 'R1(X); C1')

    client.post('/step')
    data = client.post('/step').get_json()
    assert data['completed'] is True

    data = client.post('/step').get_json()
    assert data['completed'] is True
    assert 'Simulation complete.' in data['step']['log'][-1]


def test_run_and_history(client):
    analyze(client, SCENARIO_A)

    data = client.post('/run').get_json()
    assert data['deadlock'] is False
    assert data['can_proceed'] is False
    assert len(data['steps']) == 6

    history = client.get('/simulation').get_json()['history']
    assert len(history) == 7
    assert history[0]['log'] == ['Initial state.']


def test_reset(client):
    analyze(client, SCENARIO_E)
    client.post('/step')

    data = client.post('/reset').get_json()
    assert data['current_step_index'] == -1
    assert len(client.get('/simulation').get_json()['history']) == 1

    data = client.post('/reset', data={'schedule': 'W5(Q)'}).get_json()
    assert data['current_step']['transaction_statuses'] == {'T5': 'Active'}


def test_reorder_not_configured(client):
    response = client.post('/reorder', data={'schedule': SCENARIO_B})

    assert response.status_code == 502
    assert response.get_json()['success'] is False


def test_reorder(client):
    with patch.object(app_module, 'ScheduleAssistant') as assistant_cls:
        assistant_cls.return_value.reorder_schedule.return_value = {
            'reordered_schedule': 'R1(X); W1(Y); R2(Y); W2(X)',
            'explanation': 'T1 before T2'
        }
        data = client.post('/reorder', json={'schedule': SCENARIO_B}).get_json()

    assert data['success']
    assert data['reordered_schedule'] == 'R1(X); W1(Y); R2(Y); W2(X)'


def test_discuss_requires_cycle(client):
    assert client.post('/discuss', data={'schedule': SCENARIO_A}).status_code == 400


def test_export(client):
    response = client.get('/export/operations', query_string={'schedule': SCENARIO_A})

    assert response.status_code == 200
    assert response.mimetype == 'text/markdown'
    assert '`W2(X)`' in response.get_data(as_text=True)


def test_export_uses_last_schedule(client):
    assert client.get('/export/timeline').status_code == 400

    analyze(client, SCENARIO_A)
    response = client.get('/export/summaries')
    assert 'T1: 1 Read, 1 Write, Commits' in response.get_data(as_text=True)


def test_export_unknown_table(client):
    assert client.get('/export/graph', query_string={'schedule': SCENARIO_A}).status_code == 404
