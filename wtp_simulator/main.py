#!/usr/bin/env python3
"""
WTP Simulator - HTTP host
Serves the simulation engine state and command API over Flask
"""

import os
import json
import uuid
import logging
from collections import deque
from dataclasses import asdict
from datetime import datetime, timezone
from flask import Flask, request, jsonify
from flask_cors import CORS

from .config import SimulatorConfig, load_config
from .engine import SimulationEngine
from .scenarios import get_scenario_list
from .tags import tag_metadata

logger = logging.getLogger(__name__)

EVENT_BUFFER_SIZE = 200
TREND_DISPLAY_POINTS = 360

RANGE_MAP = {
    '10m': 600,
    '1h': 3600,
    '8h': 28800,
    '24h': 86400,
}


def log_operation(log_dir, operation, src_ip, action, result, details=None):
    """Log structured JSON operation with correlation ID"""
    now = datetime.now(timezone.utc)
    log_entry = {
        'timestamp': now.isoformat(),
        'correlation_id': uuid.uuid4().hex[:8],
        'src_ip': src_ip,
        'operation': operation,
        'action': action,
        'result': result,
        'details': details or {}
    }

    log_file = os.path.join(log_dir, f"{operation}_{now.strftime('%Y%m%d')}.jsonl")
    try:
        os.makedirs(log_dir, exist_ok=True)
        with open(log_file, 'a') as f:
            f.write(json.dumps(log_entry) + '\n')
    except OSError as e:
        logger.error(f"Failed to write log: {e}")


def _downsample(points, target=TREND_DISPLAY_POINTS):
    if len(points) > target:
        step = len(points) // target
        points = points[::step]
    return points


def create_app(engine: SimulationEngine, config: SimulatorConfig = None) -> Flask:
    config = config or engine.config
    app = Flask(__name__)
    CORS(app)

    events = deque(maxlen=EVENT_BUFFER_SIZE)

    def on_operator_event(event):
        events.append(dict(event, source='operator'))

    def on_simulation_event(event):
        events.append(dict(event, source='simulation'))

    def on_alarm(alarm):
        verb = 'raised' if alarm.active else 'cleared'
        events.append({
            'id': uuid.uuid4().hex[:8],
            'timestamp': alarm.cleared_at if alarm.cleared_at is not None else alarm.raised_at,
            'description': f"Alarm {verb}: {alarm.description}",
            'source': 'alarm',
        })

    def on_reset(_):
        events.clear()

    engine.on('operator:event', on_operator_event)
    engine.on('simulation:event', on_simulation_event)
    engine.on('alarm:new', on_alarm)
    engine.on('alarm:cleared', on_alarm)
    engine.on('simulation:reset', on_reset)

    def src_ip():
        return request.environ.get('HTTP_X_FORWARDED_FOR', request.remote_addr)

    def audit(action, result, details=None):
        log_operation(config.log_dir, 'api', src_ip(), action, result, details)

    @app.route('/api/state', methods=['GET'])
    def get_state():
        """Get current process state"""
        return jsonify(asdict(engine.get_state()))

    @app.route('/api/control', methods=['POST'])
    def control():
        """Apply an operator command"""
        data = request.get_json(silent=True)
        if not data or 'type' not in data:
            audit('control', 'error', {'reason': 'invalid_request'})
            return jsonify({'error': 'Invalid request - missing type'}), 400

        command_type = data['type']
        payload = data.get('payload') or {}
        if not isinstance(payload, dict):
            return jsonify({'error': 'Invalid request - payload must be an object'}), 400

        applied = engine.apply_control(command_type, payload)
        audit('control', 'success' if applied else 'ignored', {'type': command_type, 'payload': payload})
        return jsonify({'success': True, 'applied': applied})

    @app.route('/api/alarms', methods=['GET'])
    def get_alarms():
        """Get current alarm list (active and recently cleared)"""
        return jsonify([asdict(a) for a in engine.get_state().alarms])

    @app.route('/api/alarms/history', methods=['GET'])
    def get_alarm_history():
        return jsonify([asdict(a) for a in engine.get_alarm_history()])

    @app.route('/api/alarm/acknowledge', methods=['POST'])
    def acknowledge_alarm():
        """Acknowledge an alarm by ID"""
        data = request.get_json(silent=True)
        if not data or 'id' not in data:
            audit('alarm_ack', 'error', {'reason': 'invalid_request'})
            return jsonify({'error': 'Invalid request - missing id'}), 400

        alarm_id = data['id']
        if engine.apply_control('acknowledge_alarm', {'alarm_id': alarm_id}):
            audit('alarm_ack', 'success', {'alarm_id': alarm_id})
            return jsonify({'success': True, 'alarm_id': alarm_id})

        audit('alarm_ack', 'error', {'alarm_id': alarm_id, 'reason': 'not_found'})
        return jsonify({'error': 'Alarm not found'}), 404

    @app.route('/api/alarm/acknowledge_all', methods=['POST'])
    def acknowledge_all():
        engine.apply_control('acknowledge_all', {})
        audit('alarm_ack_all', 'success')
        return jsonify({'success': True})

    @app.route('/api/thresholds', methods=['GET', 'POST'])
    def thresholds():
        """Get or replace alarm threshold sets"""
        if request.method == 'GET':
            return jsonify(engine.get_thresholds())

        data = request.get_json(silent=True)
        try:
            engine.set_thresholds(data)
        except ValueError as e:
            audit('thresholds', 'error', {'error': str(e)})
            return jsonify({'error': str(e)}), 400
        audit('thresholds', 'success', {'tags': len(data)})
        return jsonify({'success': True, 'thresholds': engine.get_thresholds()})

    @app.route('/api/trends', methods=['GET'])
    def get_trends():
        """Get trend data for one tag or every historian tag"""
        time_range = request.args.get('range', '1h')
        duration = RANGE_MAP.get(time_range, 3600)
        tag = request.args.get('tag')

        tags = [tag] if tag else engine.historian.get_available_tags()
        metadata = tag_metadata()
        data = {t: _downsample(engine.get_tag_history(t, duration)) for t in tags}

        return jsonify({
            'range': time_range,
            'points': max((len(v) for v in data.values()), default=0),
            'tags': tags,
            'metadata': {t: metadata[t] for t in tags if t in metadata},
            'data': data,
        })

    @app.route('/api/events', methods=['GET'])
    def get_events():
        """Recent operator, simulation and alarm events, newest last"""
        return jsonify(list(events))

    @app.route('/api/scenarios', methods=['GET'])
    def list_scenarios():
        return jsonify(get_scenario_list())

    @app.route('/api/scenario/status', methods=['GET'])
    def scenario_status():
        return jsonify(engine.scenario_status())

    @app.route('/api/scenario/start', methods=['POST'])
    def start_scenario():
        """Start a scenario"""
        data = request.get_json(silent=True)
        if not data or 'id' not in data:
            return jsonify({'error': 'Invalid request - missing id'}), 400

        scenario_id = data['id']
        try:
            scenario = engine.start_scenario(scenario_id)
        except ValueError as e:
            audit('scenario_start', 'error', {'scenario': scenario_id, 'error': str(e)})
            return jsonify({'error': str(e)}), 404
        audit('scenario_start', 'success', {'scenario': scenario_id})
        return jsonify({'success': True, 'scenario': scenario.id, 'name': scenario.name})

    @app.route('/api/scenario/stop', methods=['POST'])
    def stop_scenario():
        """Stop the active scenario"""
        engine.stop_scenario()
        audit('scenario_stop', 'success')
        return jsonify({'success': True})

    @app.route('/api/pause', methods=['POST'])
    def pause():
        engine.pause()
        audit('pause', 'success')
        return jsonify({'success': True, 'running': False})

    @app.route('/api/resume', methods=['POST'])
    def resume():
        engine.resume()
        audit('resume', 'success')
        return jsonify({'success': True, 'running': True})

    @app.route('/api/reset', methods=['POST'])
    def reset():
        """Reset to initial plant state"""
        engine.reset()
        audit('reset', 'success')
        return jsonify({'success': True})

    @app.route('/', methods=['GET'])
    def root():
        """Root endpoint - API information"""
        return jsonify({
            'service': 'WTP Operator Training Simulator API',
            'version': '1.0.0',
            'endpoints': {
                'health': '/health',
                'state': '/api/state',
                'control': '/api/control (POST)',
                'alarms': '/api/alarms',
                'alarm_history': '/api/alarms/history',
                'alarm_acknowledge': '/api/alarm/acknowledge (POST)',
                'alarm_acknowledge_all': '/api/alarm/acknowledge_all (POST)',
                'thresholds': '/api/thresholds (GET/POST)',
                'trends': '/api/trends?tag=<tag>&range=10m|1h|8h|24h',
                'events': '/api/events',
                'scenarios': '/api/scenarios',
                'scenario_status': '/api/scenario/status',
                'scenario_start': '/api/scenario/start (POST)',
                'scenario_stop': '/api/scenario/stop (POST)',
                'pause': '/api/pause (POST)',
                'resume': '/api/resume (POST)',
                'reset': '/api/reset (POST)'
            }
        })

    @app.route('/health', methods=['GET'])
    def health():
        """Health check"""
        state = engine.get_state()
        return jsonify({
            'status': 'ok',
            'running': state.running,
            'sim_speed': state.sim_speed,
            'active_scenario': state.active_scenario,
            'active_alarms': len([a for a in state.alarms if a.active]),
            'trend_points': len(engine.historian),
        })

    return app


def main():
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    config = load_config()
    engine = SimulationEngine(config)
    app = create_app(engine, config)

    engine.start()
    try:
        app.run(host=config.host, port=config.port, debug=False)
    finally:
        engine.stop()


if __name__ == '__main__':
    main()
