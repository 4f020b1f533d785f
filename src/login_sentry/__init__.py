"""Take a photo when the system log reports a failed login."""
