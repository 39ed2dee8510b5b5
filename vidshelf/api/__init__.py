"""HTTP and Socket.IO serving layer."""
