# Integration tests over real localhost sockets
