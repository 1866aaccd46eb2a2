import logging

from flask import Flask, Response, jsonify, render_template, request

from analyzer import run_analysis
from config import Config, configure_logging
from conflict_analyzer import describe_cycle
from generative import GenerativeServiceError, ScheduleAssistant
from helpers import (
    operations_log_to_markdown,
    schedule_timeline_to_markdown,
    transaction_summaries_to_markdown
)
from lock_manager import LockManager

logger = logging.getLogger(__name__)

config = Config.from_env()
configure_logging(config.log_level)

app = Flask(__name__)
app.config.from_mapping(config.to_flask())

# Global objects
lock_manager = None
current_schedule = None

EXPORTS = {
    'operations': ('operations-log.md', lambda s: operations_log_to_markdown(s.operations)),
    'timeline': ('schedule-timeline.md', lambda s: schedule_timeline_to_markdown(s.operations, s.transaction_ids)),
    'summaries': ('transaction-summaries.md', lambda s: transaction_summaries_to_markdown(s.transactions)),
}


def get_schedule():
    """Schedule text from a form field or a JSON body"""
    schedule = request.form.get('schedule')
    if schedule is None:
        schedule = (request.get_json(silent=True) or {}).get('schedule', '')
    return schedule or ''


def get_assistant():
    return ScheduleAssistant(
        app.config.get('ASSISTANT_URL'),
        api_key=app.config.get('ASSISTANT_API_KEY'),
        timeout=app.config.get('ASSISTANT_TIMEOUT', 30.0)
    )


def simulation_state():
    return {
        'current_step': lock_manager.current_step.to_dict(),
        'current_step_index': lock_manager.current_step_index,
        'can_proceed': lock_manager.can_proceed()
    }


@app.route('/')
def index():
    return render_template('index.html', default_schedule=app.config['DEFAULT_SCHEDULE'])


@app.route('/analyze', methods=['POST'])
def analyze():
    global lock_manager, current_schedule

    try:
        schedule = get_schedule()
        if not schedule.strip():
            return jsonify({'error': 'No schedule provided'}), 400

        snapshot = run_analysis(schedule)
        if not snapshot.operations:
            return jsonify({'error': 'No valid operations found', 'warnings': snapshot.warnings}), 400

        current_schedule = schedule
        lock_manager = LockManager(snapshot.operations)

        result = snapshot.to_dict()
        result['success'] = True
        result['view_serializability_discussion'] = None

        graph = snapshot.precedence_graph
        if not graph.is_serializable and app.config.get('ASSISTANT_URL'):
            try:
                discussion = get_assistant().discuss_view_serializability(schedule, describe_cycle(graph))
                result['view_serializability_discussion'] = discussion['discussion']
            except GenerativeServiceError as e:
                logger.warning(f"View serializability discussion unavailable: {e}")
                result['view_serializability_discussion'] = 'View serializability discussion could not be loaded.'

        return jsonify(result)

    except Exception as e:
        logger.exception('Analysis failed')
        return jsonify({'error': str(e)}), 500


@app.route('/step', methods=['POST'])
def step():
    try:
        if not lock_manager:
            return jsonify({'error': 'No schedule loaded'}), 400

        # Stepping past the end only logs that the simulation is complete
        result = lock_manager.next_step()
        return jsonify({
            'success': True,
            'completed': not lock_manager.can_proceed(),
            'step': result.to_dict(),
            **simulation_state()
        })

    except Exception as e:
        logger.exception('Simulation step failed')
        return jsonify({'error': str(e)}), 500


@app.route('/run', methods=['POST'])
def run_simulation():
    try:
        if not lock_manager:
            return jsonify({'error': 'No schedule loaded'}), 400

        steps = lock_manager.run_to_completion()
        return jsonify({
            'success': True,
            'steps': [s.to_dict() for s in steps],
            'deadlock': lock_manager.current_step.is_deadlock,
            **simulation_state()
        })

    except Exception as e:
        logger.exception('Simulation run failed')
        return jsonify({'error': str(e)}), 500


@app.route('/simulation', methods=['GET'])
def simulation():
    if not lock_manager:
        return jsonify({'error': 'No schedule loaded'}), 400

    return jsonify({
        'success': True,
        'history': [s.to_dict() for s in lock_manager.history],
        **simulation_state()
    })


@app.route('/reset', methods=['POST'])
def reset():
    global lock_manager, current_schedule

    try:
        schedule = get_schedule()
        if schedule.strip():
            snapshot = run_analysis(schedule)
            if lock_manager:
                lock_manager.reset(snapshot.operations)
            else:
                lock_manager = LockManager(snapshot.operations)
            current_schedule = schedule
        elif lock_manager:
            lock_manager.reset()
        else:
            return jsonify({'success': True})

        return jsonify({'success': True, **simulation_state()})

    except Exception as e:
        logger.exception('Reset failed')
        return jsonify({'error': str(e)}), 500


@app.route('/reorder', methods=['POST'])
def reorder():
    schedule = get_schedule()
    if not schedule.strip():
        return jsonify({'error': 'No schedule provided'}), 400

    try:
        result = get_assistant().reorder_schedule(schedule)
    except GenerativeServiceError as e:
        return jsonify({'success': False, 'error': f"Failed to reorder schedule: {e}"}), 502

    return jsonify({'success': True, **result})


@app.route('/discuss', methods=['POST'])
def discuss():
    schedule = get_schedule()
    if not schedule.strip():
        return jsonify({'error': 'No schedule provided'}), 400

    graph = run_analysis(schedule).precedence_graph
    if graph.is_serializable:
        return jsonify({'error': 'Schedule is conflict serializable; nothing to discuss'}), 400

    try:
        result = get_assistant().discuss_view_serializability(schedule, describe_cycle(graph))
    except GenerativeServiceError as e:
        return jsonify({'success': False, 'error': f"Failed to load discussion: {e}"}), 502

    return jsonify({'success': True, 'conflict_cycle_info': describe_cycle(graph), **result})


@app.route('/export/<table>', methods=['GET'])
def export_table(table):
    if table not in EXPORTS:
        return jsonify({'error': f"Unknown table '{table}'"}), 404

    schedule = request.args.get('schedule') or current_schedule
    if not schedule:
        return jsonify({'error': 'No schedule provided'}), 400

    filename, render = EXPORTS[table]
    markdown = render(run_analysis(schedule))
    return Response(
        markdown,
        mimetype='text/markdown',
        headers={'Content-Disposition': f"attachment; filename={filename}"}
    )


if __name__ == '__main__':
    app.run(debug=config.debug, host=config.host, port=config.port)
