"""
Test data loader Lambda.

Deployed as a single file (index.py) into the source VPC to seed the source
cluster with a known data set before migration: 20 users, 20 products,
2 counters and 2 application keys (44 keys).

Environment:
    REDIS_ENDPOINT  source endpoint address
    REDIS_PORT      source port (default 6379)
"""

import json
import logging
import os
import socket
import time

logger = logging.getLogger()
logger.setLevel(logging.INFO)

RECV_BUFFER_SIZE = 1024
SOCKET_TIMEOUT = 10
WRITE_DELAY_SECONDS = 0.1


def encode_command(*args):
    parts = [f"*{len(args)}\r\n".encode()]
    for arg in args:
        data = str(arg).encode()
        parts.append(b"$%d\r\n%s\r\n" % (len(data), data))
    return b"".join(parts)


def send_command(host, port, *args):
    """One command per connection; returns the decoded reply or None."""
    try:
        sock = socket.create_connection((host, port), timeout=SOCKET_TIMEOUT)
    except OSError as e:
        logger.error(f"Redis connection failed: {e}")
        return None
    try:
        sock.sendall(encode_command(*args))
        return sock.recv(RECV_BUFFER_SIZE).decode("utf-8", errors="replace")
    except OSError as e:
        logger.error(f"Redis command {args[0] if args else ''} failed: {e}")
        return None
    finally:
        sock.close()


def redis_set(host, port, key, value):
    response = send_command(host, port, "SET", key, value)
    return bool(response) and "+OK" in response


def seed_data(now=None):
    """The (key, value) pairs written by the loader, in write order."""
    data = [(f"user:{i}", f"User{i}") for i in range(1, 21)]
    data += [(f"product:{i}", f"Product{i}") for i in range(1, 21)]
    data += [("global:user_count", "20"), ("global:product_count", "20")]
    data += [("app:version", "1.0.0"), ("app:last_updated", str(int(now if now is not None else time.time())))]
    return data


def lambda_handler(event, context, sleep=time.sleep):
    try:
        redis_endpoint = os.environ["REDIS_ENDPOINT"]
        redis_port = int(os.environ.get("REDIS_PORT", "6379"))
        logger.info(f"Connecting to Redis at: {redis_endpoint}:{redis_port}")

        ping_response = send_command(redis_endpoint, redis_port, "PING")
        if not ping_response or "+PONG" not in ping_response:
            return {"statusCode": 500, "body": json.dumps(f"Redis connection failed: {ping_response}")}
        logger.info("Redis connection successful!")

        keys_loaded = 0
        for key, value in seed_data():
            if redis_set(redis_endpoint, redis_port, key, value):
                keys_loaded += 1
            else:
                logger.warning(f"SET {key} failed")
            sleep(WRITE_DELAY_SECONDS)

        dbsize_response = send_command(redis_endpoint, redis_port, "DBSIZE")
        final_count = 0
        if dbsize_response and dbsize_response.startswith(":"):
            final_count = int(dbsize_response[1:].strip())

        return {
            "statusCode": 200,
            "body": json.dumps({
                "message": "Data loading completed successfully",
                "keys_loaded": keys_loaded,
                "final_db_size": final_count,
                "redis_endpoint": redis_endpoint,
            }),
        }

    except (KeyError, ValueError) as e:
        logger.error(f"Error: {e}")
        return {"statusCode": 500, "body": json.dumps(f"Error: {e}")}
